"""DocVault server: HTTP API and scheduled sync."""
