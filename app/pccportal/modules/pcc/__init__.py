"""
Dealer PCC (Product Concern Capture) module.

- Dealers raise a concern against a vehicle; it gets a PCC-IN-<year>-<NNNN> reference
- Manufacturer staff move it through review; every move appends to the status history
- Every create and status change lands in the audit trail with the same commit
"""
