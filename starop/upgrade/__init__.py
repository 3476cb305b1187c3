from starop.upgrade.custom_hooks import CommandExecutor, CustomHookRunner, ShellCommandExecutor
from starop.upgrade.hooks import FEConnection, Hook, HookExecutor, HookStage
from starop.upgrade.manager import UpgradeManager

__all__ = [
    "CommandExecutor",
    "CustomHookRunner",
    "FEConnection",
    "Hook",
    "HookExecutor",
    "HookStage",
    "ShellCommandExecutor",
    "UpgradeManager",
]
