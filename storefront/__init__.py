"""Storefront checkout: panier, checkout et rapprochement des paiements (FastAPI)."""
