"""PriceScout core package.

This package contains the market data scraping pipeline:
- browser: Playwright stealth sessions and per-site navigation
- parser: Price and benchmark text parsing with unit detection
- resolver: Target URL/selector resolution and the GBP/GBX alternate
- fallback: Secondary-provider factsheet discovery
- delay: Domain-aware politeness delays
- scraper: Single-target price and benchmark scrapers
- currency: Exchange rate fetching over HTTP
- orchestrator: Full runs, retries and result streaming
- scheduler: Cron-driven unattended runs
- storage: Target, value and attempt-history persistence
- reporter: Pandas/Plotly run reports
- logger: Structured JSON logging configuration
- exceptions: Custom exception hierarchy
"""

__version__ = "1.0.0"
