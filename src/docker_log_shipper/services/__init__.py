"""Discovery, log pipelines, resource sampling and the Logstash relay"""
