"""
Application-level error taxonomy.

Authorization and conflict errors are final for the request; the caller should
refresh state rather than retry. Only StorageUnavailableError is retryable.
"""
from uuid import UUID


class MarketplaceError(Exception):
    retryable: bool = False


class NotAuthorizedError(MarketplaceError):
    def __init__(self, user_id: UUID, resource: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} is not allowed to act on {resource}.")


class ListingNotFoundError(MarketplaceError):
    def __init__(self, listing_id: UUID) -> None:
        super().__init__(f"Listing {listing_id} not found.")


class ListingUnavailableError(MarketplaceError):
    def __init__(self, listing_id: UUID) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} is not accepting offers.")


class AlreadyFinalizedError(MarketplaceError):
    def __init__(self, listing_id: UUID) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} has already been sold.")


class OfferInvalidError(MarketplaceError):
    def __init__(self, offer_id: UUID, reason: str) -> None:
        self.offer_id = offer_id
        self.reason = reason
        super().__init__(f"Offer {offer_id} is no longer available: {reason}.")


class OfferNotCompletedError(MarketplaceError):
    def __init__(self, offer_id: UUID) -> None:
        self.offer_id = offer_id
        super().__init__(f"Offer {offer_id} has not been completed.")


class DuplicateRatingError(MarketplaceError):
    def __init__(self, offer_id: UUID, rater_id: UUID) -> None:
        super().__init__(f"User {rater_id} has already rated offer {offer_id}.")


class NotificationNotFoundError(MarketplaceError):
    def __init__(self, notification_id: UUID) -> None:
        super().__init__(f"Notification {notification_id} not found.")


class StorageUnavailableError(MarketplaceError):
    """The store could not be reached or did not answer in time."""

    retryable = True


class SaleOutcomeUnknownError(MarketplaceError):
    """
    The store stopped answering between reserving the listing and recording
    the sale. Retrying cannot help; the caller should re-read the listing.
    """

    def __init__(self, listing_id: UUID) -> None:
        self.listing_id = listing_id
        super().__init__(
            f"The outcome of the sale of listing {listing_id} is not known yet; re-read the listing."
        )
