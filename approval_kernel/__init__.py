"""
Approval Kernel

The approval workflow core of the sales-operations system:
- Flow templates (ordered approver sequences per document type)
- Approval requests frozen from a template against one quote or PO
- Strict sequential step decisions with compare-and-swap updates
- Outcome propagation to the target document and requester notification
"""

__version__ = "0.1.0"
