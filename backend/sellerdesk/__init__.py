"""SellerDesk backend: accounts, roles and shared eBay credentials."""
