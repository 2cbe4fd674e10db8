from enum import Enum


class NotificationKind(str, Enum):
    PURCHASE_REQUEST = "purchase_request"
    BORROW_REQUEST = "borrow_request"
    PURCHASE_CONFIRMED = "purchase_confirmed"
    ITEM_SOLD = "item_sold"
