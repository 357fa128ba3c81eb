"""
Access requests: dealer staff ask for a portal account; admins approve or reject.
"""
