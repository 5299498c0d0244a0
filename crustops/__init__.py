"""
                CrustOps Pizza Lab

Small-batch pizza pre-order storefront: time-boxed batch menus with
per-pizza caps, phone OTP login, structured reviews and a kitchen
dashboard for order status.
"""

__version__ = "1.0.0"
