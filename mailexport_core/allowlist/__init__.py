from mailexport_core.allowlist.manager import AllowListListing, AllowListManager

__all__ = ["AllowListListing", "AllowListManager"]
