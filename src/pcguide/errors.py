"""Service-layer errors. Each carries the HTTP status the API answers with."""

from __future__ import annotations


class PCGuideError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(PCGuideError):
    status_code = 400


class EmptyCartError(PCGuideError):
    status_code = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class PartNotFoundError(PCGuideError):
    status_code = 404

    def __init__(self, part_id: str):
        super().__init__("Part not found")
        self.part_id = part_id


class CartNotFoundError(PCGuideError):
    status_code = 404

    def __init__(self, message: str = "Cart not found"):
        super().__init__(message)


class OrderNotFoundError(PCGuideError):
    status_code = 404

    def __init__(self, order_number: str):
        super().__init__("Order not found")
        self.order_number = order_number


class BuildNotFoundError(PCGuideError):
    status_code = 404

    def __init__(self, build_id: str):
        super().__init__("Build not found")
        self.build_id = build_id


class GuideNotFoundError(PCGuideError):
    status_code = 404

    def __init__(self, guide_id: str):
        super().__init__("Guide not found")
        self.guide_id = guide_id
