"""Business services: validation, pricing, booking orchestration, QR codes and receipts."""
