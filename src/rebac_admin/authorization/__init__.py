"""Request authorization: principal resolution, request mapping and checks."""
