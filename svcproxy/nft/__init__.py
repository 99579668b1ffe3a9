"""nftables rule fragments and change-tracked nftables tables."""