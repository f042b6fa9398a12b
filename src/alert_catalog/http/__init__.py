"""HTTP content fetching and text extraction."""
