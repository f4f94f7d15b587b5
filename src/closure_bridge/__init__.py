"""closure-bridge - drive the Closure Compiler through its standard streams.

Library use:
    from closure_bridge import Compiler
    js = await Compiler(jar_file="compiler.jar").compile("var x = 1;")

MCP server:
    uvx closure-bridge
"""

__version__ = "0.1.0"

from .bridge import PipelineBridge
from .compiler import Compiler, serialize_options
from .errors import (
    BridgeConfigError,
    BridgeError,
    CompilationFailure,
    CompileTimeoutError,
    InvalidTransitionError,
    LaunchError,
    PipeClosedError,
    ReadError,
)
from .runtime import BannerFilter, ProcessSpec
from .types import BannerPolicy, Failure, Invocation, InvocationState, Result, Success

__all__ = [
    "__version__",
    "BannerFilter",
    "BannerPolicy",
    "BridgeConfigError",
    "BridgeError",
    "CompilationFailure",
    "CompileTimeoutError",
    "Compiler",
    "Failure",
    "InvalidTransitionError",
    "Invocation",
    "InvocationState",
    "LaunchError",
    "PipeClosedError",
    "PipelineBridge",
    "ProcessSpec",
    "ReadError",
    "Result",
    "Success",
    "serialize_options",
]
