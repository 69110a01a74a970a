"""pricefeed: live quotes for a portfolio's holdings."""
