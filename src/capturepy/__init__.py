"""capturepy: error, performance and business-event capture for services."""

from capturepy.adapters.frameworks.rpc import CallInfo, RpcCaptureInterceptors
from capturepy.adapters.logging import CaptureHandler
from capturepy.adapters.storage import InMemoryEventSink, RingBufferEventSink
from capturepy.adapters.transport import BackgroundTransport, HttpDelivery
from capturepy.config import CaptureSettings, create_pipeline, parse_additional_tags
from capturepy.core.guards import OperationGuards
from capturepy.core.hub import Hub, bind_hub, get_current_hub
from capturepy.core.models import (
    Breadcrumb,
    CapturedEvent,
    EventKind,
    ExceptionInfo,
    Level,
    SpanRecord,
    TransactionRecord,
    User,
)
from capturepy.core.pipeline import EventPipeline, EventPipelineConfig
from capturepy.core.profiles import EnvironmentProfile, resolve_profile
from capturepy.core.recovery import (
    guarded,
    panic,
    recover,
    recover_silent,
    spawn_guarded,
    with_panic_recovery,
    with_panic_recovery_silent,
)
from capturepy.core.scope import Scope
from capturepy.core.status import StatusCode
from capturepy.core.tracing import Span, Transaction
from capturepy.exceptions import (
    CaptureError,
    DeliveryError,
    PanicError,
    PipelineInitError,
    RpcError,
)

__all__ = [
    "BackgroundTransport",
    "Breadcrumb",
    "CallInfo",
    "CaptureError",
    "CaptureHandler",
    "CaptureSettings",
    "CapturedEvent",
    "DeliveryError",
    "EnvironmentProfile",
    "EventKind",
    "EventPipeline",
    "EventPipelineConfig",
    "ExceptionInfo",
    "HttpDelivery",
    "Hub",
    "InMemoryEventSink",
    "Level",
    "OperationGuards",
    "PanicError",
    "PipelineInitError",
    "RingBufferEventSink",
    "RpcCaptureInterceptors",
    "RpcError",
    "Scope",
    "Span",
    "SpanRecord",
    "StatusCode",
    "Transaction",
    "TransactionRecord",
    "User",
    "bind_hub",
    "create_pipeline",
    "get_current_hub",
    "guarded",
    "panic",
    "parse_additional_tags",
    "recover",
    "recover_silent",
    "resolve_profile",
    "spawn_guarded",
    "with_panic_recovery",
    "with_panic_recovery_silent",
]
