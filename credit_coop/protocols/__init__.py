"""Contract gateways, one package per protocol."""
