"""
All the data structures used across the package: as received from the API,
as addressed in the API, and as used for the credentials.
"""
