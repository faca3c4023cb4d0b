from operations.runner import OperationRunner, build_runner

__all__ = ["OperationRunner", "build_runner"]
