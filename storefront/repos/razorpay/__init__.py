"""Razorpay payment gateway client."""

from .gateway import RazorpayPaymentGateway

__all__ = ["RazorpayPaymentGateway"]
