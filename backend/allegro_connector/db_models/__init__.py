from allegro_connector.db_models.product import Product
from allegro_connector.db_models.offer import AllegroOffer
from allegro_connector.db_models.user_token import AllegroUserToken
from allegro_connector.db_models.sync_job import SyncJob

__all__ = [
    "Product",
    "AllegroOffer",
    "AllegroUserToken",
    "SyncJob",
]
