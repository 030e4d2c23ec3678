"""Task engagement service: bidding, hiring, checklist verification and escrow."""
