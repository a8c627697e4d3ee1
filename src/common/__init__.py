from common.events import EventEmitter
from common.ids import generate_id

__all__ = ["EventEmitter", "generate_id"]
