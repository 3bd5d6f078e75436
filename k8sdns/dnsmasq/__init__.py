"""dnsmasq process supervision and cache metrics."""