"""Core business logic: catalog, order ledger, payments and their workflow."""
