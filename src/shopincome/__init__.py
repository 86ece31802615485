"""Shopify order income sync and merchant-local reporting."""
