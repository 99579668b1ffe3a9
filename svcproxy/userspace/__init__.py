"""Round-robin load balancing and endpoint bookkeeping for a userspace proxy."""