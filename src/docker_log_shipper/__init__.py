"""Docker log shipper - tails container logs on remote Docker hosts and relays them to Logstash"""

__version__ = "0.1.0"
