"""Domain packages for pricing, subscriptions, billing and vendor assignment."""
