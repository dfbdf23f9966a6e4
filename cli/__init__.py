"""Command-line front end for the crawl worker."""
