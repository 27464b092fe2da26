"""Credit Coop Secured Line of Credit."""
from .line import SecuredLine

__all__ = ["SecuredLine"]
