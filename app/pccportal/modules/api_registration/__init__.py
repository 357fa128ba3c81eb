"""
API registration: manufacturer-run training events and the dealer staff registered for them.
"""
