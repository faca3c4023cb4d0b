from hashnode.client import HashnodeClient, PlatformClient, MAX_PAGE_SIZE

__all__ = ["HashnodeClient", "PlatformClient", "MAX_PAGE_SIZE"]
