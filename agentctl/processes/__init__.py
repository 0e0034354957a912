"""Process management — supervision of the single agent worker process.

This package provides:
- RuntimeResolver: pick the worker entry point among candidate paths
- ProcessSupervisor: spawn, watch, stop and reap the worker
- stub_worker: dependency-free fallback worker used when nothing resolves
"""
