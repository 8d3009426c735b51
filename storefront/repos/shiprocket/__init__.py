"""Shiprocket shipment gateway client."""

from .gateway import ShiprocketShipmentGateway, Warehouse

__all__ = ["ShiprocketShipmentGateway", "Warehouse"]
