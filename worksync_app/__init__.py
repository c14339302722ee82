"""WorkSync application package: models, importer engine and utilities."""
