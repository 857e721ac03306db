"""Storefront core: order lifecycle, inventory, SMS verification and accounts."""
