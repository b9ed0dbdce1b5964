from .production_server import ProductionAPIServer, create_production_server

__all__ = ['ProductionAPIServer', 'create_production_server']
