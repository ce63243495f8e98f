"""
replayfetch Integrations - clients for the external services behind a download.

- demo_url: demo URL service (share code -> replay URL)
- shards: replay CDN shard probing
- steam: Steam share code history
"""
