"""
Lua scripts executed atomically by Redis.
"""

# KEYS[1] = rate counter key
# KEYS[2] = idempotency key
# ARGV[1] = limit
# ARGV[2] = window in milliseconds
# ARGV[3] = reservation placeholder ("" when not reserving)
# ARGV[4] = reservation ttl in milliseconds
# ARGV[5] = reservation prefix ("" when not reserving)
GATEKEEPER_LUA = """
local limit_key = KEYS[1]
local idem_key = KEYS[2]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local reservation = ARGV[3]
local reservation_ttl_ms = tonumber(ARGV[4])
local prefix = ARGV[5]

local cached = redis.call("GET", idem_key)
if cached then
  if prefix ~= "" and string.sub(cached, 1, string.len(prefix)) == prefix then
    return {"IN_PROGRESS", cached}
  end
  return {"DUPLICATE", cached}
end

local current = redis.call("INCR", limit_key)
if current == 1 then
  redis.call("PEXPIRE", limit_key, window_ms)
end
local ttl = redis.call("PTTL", limit_key)

if current > limit then
  return {"RATE_LIMITED", current, ttl}
end

if reservation ~= "" then
  redis.call("SET", idem_key, reservation, "PX", reservation_ttl_ms)
end

return {"ALLOW", current, ttl}
"""

# KEYS[1] = key
# ARGV[1] = expected value
DELETE_IF_EQUALS_LUA = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
  return redis.call("DEL", KEYS[1])
end
return 0
"""

# KEYS[1] = counter key
# ARGV[1] = ttl in milliseconds, applied only when the counter is created
INCREMENT_WITH_TTL_LUA = """
local current = redis.call("INCR", KEYS[1])
if current == 1 then
  redis.call("PEXPIRE", KEYS[1], tonumber(ARGV[1]))
end
return current
"""
