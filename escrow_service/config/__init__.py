from .production import ProductionConfig, get_config
from .routing import RoutingConfig, RoutingParameters

__all__ = ['ProductionConfig', 'RoutingConfig', 'RoutingParameters', 'get_config']
