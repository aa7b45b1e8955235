"""Redis Lua scripts for the faucet state store.

Each script performs a read-modify-write as one atomic unit so concurrent
instances sharing a Redis never lose an update (two requests reading the
same cursor, two limiter checks both admitting the last slot, and so on).
"""

# Prune a sliding window and report what survives.
# Members are "<ms>-<nonce>" so events in the same millisecond stay distinct.
WINDOW_CHECK_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
    local count = redis.call('ZCARD', key)
    local oldest = -1
    if count > 0 then
        local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        oldest = tonumber(first[2])
    end
    return {count, oldest}
"""

# Append one event and refresh the key TTL to the window length.
WINDOW_RECORD_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local member = ARGV[3]

    redis.call('ZADD', key, now, member)
    redis.call('PEXPIRE', key, window)
    return redis.call('ZCARD', key)
"""

# Prune, then append only if the window still has room.
WINDOW_HIT_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
    local count = redis.call('ZCARD', key)
    local oldest = -1
    if count > 0 then
        local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        oldest = tonumber(first[2])
    end

    if count >= limit then
        return {0, count, oldest}
    end

    redis.call('ZADD', key, now, member)
    redis.call('PEXPIRE', key, window)
    if oldest == -1 then
        oldest = now
    end
    return {1, count + 1, oldest}
"""

# Prune several windows and append to all of them only if every one has room.
# ARGV: now, member, then (window, limit) per key in KEYS order.
# Returns {failed index (0-based, -1 when admitted), count1, oldest1, count2, oldest2, ...}.
WINDOW_HIT_ALL_SCRIPT = """
    local now = tonumber(ARGV[1])
    local member = ARGV[2]
    local counts = {}
    local oldest = {}
    local failed = -1

    for i = 1, #KEYS do
        local window = tonumber(ARGV[1 + 2 * i])
        local limit = tonumber(ARGV[2 + 2 * i])
        redis.call('ZREMRANGEBYSCORE', KEYS[i], '-inf', now - window)
        counts[i] = redis.call('ZCARD', KEYS[i])
        oldest[i] = -1
        if counts[i] > 0 then
            local first = redis.call('ZRANGE', KEYS[i], 0, 0, 'WITHSCORES')
            oldest[i] = tonumber(first[2])
        end
        if failed == -1 and counts[i] >= limit then
            failed = i - 1
        end
    end

    if failed == -1 then
        for i = 1, #KEYS do
            redis.call('ZADD', KEYS[i], now, member)
            redis.call('PEXPIRE', KEYS[i], tonumber(ARGV[1 + 2 * i]))
            counts[i] = counts[i] + 1
            if oldest[i] == -1 then
                oldest[i] = now
            end
        end
    end

    local result = {failed}
    for i = 1, #KEYS do
        table.insert(result, counts[i])
        table.insert(result, oldest[i])
    end
    return result
"""

# Round-robin cursor: return the slot being consumed and the next one.
ADVANCE_CURSOR_SCRIPT = """
    local key = KEYS[1]
    local size = tonumber(ARGV[1])

    local current = tonumber(redis.call('GET', key)) or 0
    current = current % size
    local next_index = (current + 1) % size
    redis.call('SET', key, next_index)
    return {current, next_index}
"""

# Increment several ledger counters at once, stamping the epoch on first use.
INCREMENT_COUNTERS_SCRIPT = """
    local key = KEYS[1]
    local now = ARGV[1]

    redis.call('HSETNX', key, 'epoch_start', now)
    for i = 2, #ARGV do
        redis.call('HINCRBY', key, ARGV[i], 1)
    end
    return tonumber(redis.call('HGET', key, 'total_claims')) or 0
"""

# Replace the ledger with a fresh one and rewind the rotation cursor.
RESET_COUNTERS_SCRIPT = """
    local ledger_key = KEYS[1]
    local cursor_key = KEYS[2]
    local now = ARGV[1]

    redis.call('DEL', ledger_key)
    redis.call('HSET', ledger_key, 'epoch_start', now)
    redis.call('SET', cursor_key, 0)
    return 1
"""
