from typing import (
    Any,
    Callable,
    Generic,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
    cast,
)

RT = TypeVar("RT")


class cached_property(Generic[RT]):
    """Cached property.

    A property descriptor that caches the return value
    of the get function. Assigning to the attribute replaces
    the cached value, which is how tests inject api mocks.

    Examples:
        .. sourcecode:: python

            @cached_property
            def core_v1_api(self):
                return CoreV1Api(self.api_client)
    """

    def __init__(
        self,
        fget: Callable[[Any], RT],
        fset: Callable[[Any, RT], RT] = None,
        doc: str = None,
    ) -> None:
        self.__get: Callable[[Any], RT] = fget
        self.__set: Optional[Callable[[Any, RT], RT]] = fset
        self.__doc__ = doc or fget.__doc__
        self.__name__ = fget.__name__
        self.__module__ = fget.__module__

    def __get__(self, obj: Any, type: Type = None) -> RT:
        if obj is None:
            return cast(RT, self)
        try:
            return cast(RT, obj.__dict__[self.__name__])
        except KeyError:
            value = obj.__dict__[self.__name__] = self.__get(obj)
            return value

    def __set__(self, obj: Any, value: RT) -> None:
        if self.__set is not None:
            value = self.__set(obj, value)
        obj.__dict__[self.__name__] = value

    def __delete__(self, obj: Any) -> None:
        obj.__dict__.pop(self.__name__, None)


def dig(data: Optional[Mapping], path: Sequence[str], default: Any = None) -> Any:
    """Walk nested mappings along ``path``, returning ``default`` on any miss."""
    current = data
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def attr(obj: Any, *names: str, default: Any = None) -> Any:
    """Walk nested attributes of kubernetes models, returning ``default`` on any ``None``."""
    current = obj
    for name in names:
        if current is None:
            return default
        current = getattr(current, name, None)
    return default if current is None else current
