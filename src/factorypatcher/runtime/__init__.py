"""
Host runtime side: detection, factory interception, reference host.
"""

from .detector import HostRuntimeDetector, SlotObserver, make_marker_filter, next_tick
from .host import Module, ModuleRuntime, compile_factory
from .interceptor import FactoryMap, FactoryProxy, ModuleFactoryInterceptor
from .source_text import SourceCache, factory_source
