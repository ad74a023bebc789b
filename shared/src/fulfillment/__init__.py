"""Payment confirmation and fulfillment pipeline."""
