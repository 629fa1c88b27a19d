from .anomaly import AnomalyClient as AnomalyClient
from .anomaly import FitParameters as FitParameters
from .batching.decoder import decode as decode
from .batching.encoder import Row as Row
from .batching.encoder import encode as encode
from .batching.fanin import TaskKind as TaskKind
from .batching.fanin import merge_tasks as merge_tasks
from .config import ServiceSettings as ServiceSettings
from .core import BatchClient as BatchClient
from .core import RowResult as RowResult
from .services import get_endpoint as get_endpoint
from .utils.logging import setup_logging as setup_logging

__all__ = [
    "AnomalyClient",
    "BatchClient",
    "FitParameters",
    "Row",
    "RowResult",
    "ServiceSettings",
    "TaskKind",
    "decode",
    "encode",
    "get_endpoint",
    "merge_tasks",
    "setup_logging",
]
