"""Cross-cutting service helpers shared by the API client and the workers."""
