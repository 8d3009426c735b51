"""
Use cases of the order engine.

Each use case depends only on the repository and gateway protocols in
``storefront.repositories`` and changes order status exclusively through
``storefront.lifecycle.OrderLifecycle``.
"""
