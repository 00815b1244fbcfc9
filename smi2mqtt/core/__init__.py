
from .channel import Channel, ChannelClosed
from .config import BridgeConfig, ConfigError, DEFAULT_CONFIG_PATH
from .config_manager import ConfigManager, get_config_manager
from .supervisor import LifecycleSupervisor, SupervisorState, WaitGroup

__all__ = [
    'Channel',
    'ChannelClosed',
    'BridgeConfig',
    'ConfigError',
    'DEFAULT_CONFIG_PATH',
    'ConfigManager',
    'get_config_manager',
    'LifecycleSupervisor',
    'SupervisorState',
    'WaitGroup',
]
