"""
EPG proxy: resilient read-through cache and channel/date query engine
for large XMLTV schedule documents.
"""
