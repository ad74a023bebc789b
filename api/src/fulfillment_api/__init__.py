"""HTTP surface for the payment fulfillment pipeline."""
